from dataclasses import dataclass
from typing import List

from .errors import ValidationError


@dataclass(frozen=True)
class Role:
    name: str
    description: str
    icon: str

    def to_dict(self) -> dict:
        return {
            'role_name': self.name,
            'role_description': self.description,
            'role_icon': self.icon,
        }


# Cycled by placement order during team formation
ROLES: List[Role] = [
    Role(
        'Pioneer',
        'In charge of traditional style mapping of annotating on a map',
        '🗺️'
    ),
    Role(
        'Technician',
        'Ensures assets are correctly named and missing voltages are added',
        '⚡'
    ),
    Role(
        'Seeker',
        'Seeks out missing Power Plants, good first lines and available credible '
        'information sources, checks industries as well',
        '🔍'
    ),
]


def role_for_position(position: int) -> Role:
    return ROLES[position % len(ROLES)]


def get_role(name: str) -> Role:
    for role in ROLES:
        if role.name == name:
            return role
    raise ValidationError(
        f"Invalid role: {name}. Must be {', '.join(r.name for r in ROLES[:-1])}, or {ROLES[-1].name}.",
        code='invalid_role',
        details={'role_name': name}
    )
