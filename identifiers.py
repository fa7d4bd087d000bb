import random

from constants import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH

ADJECTIVES = ['Swift', 'Silent', 'Brave', 'Clever', 'Mystic', 'Golden', 'Crimson', 'Azure', 'Emerald', 'Whispering']
NOUNS = ['Wolf', 'Eagle', 'Lion', 'Fox', 'Bear', 'Dragon', 'Phoenix', 'Shadow', 'River', 'Mountain']


def generate_room_code(length: int = ROOM_CODE_LENGTH, rng: random.Random = None) -> str:
    rng = rng or random
    return ''.join(rng.choices(ROOM_CODE_ALPHABET, k=length))


def generate_username(rng: random.Random = None) -> str:
    rng = rng or random
    return f"Guest_{rng.choice(ADJECTIVES)}_{rng.choice(NOUNS)}"


def normalize_room_code(room_id) -> str:
    """Room codes are matched case-insensitively and ignore surrounding whitespace."""
    if not isinstance(room_id, str):
        return ""
    return room_id.strip().upper()
