import secrets
import string

# Policy: 8-15 chars, exactly 2 specials, >=1 digit, >=1 letter,
# everything else alphanumeric.
LETTERS = string.ascii_letters
DIGITS = string.digits
SPECIAL = "!@#$%^&*()_+-=[]{}|;:,.<>?"
ALPHANUMERIC = LETTERS + DIGITS

MIN_LENGTH = 8
MAX_LENGTH = 15
SPECIAL_COUNT = 2


def generate_password() -> str:
    # Random length in [MIN_LENGTH, MAX_LENGTH]
    length = MIN_LENGTH + secrets.randbelow(MAX_LENGTH - MIN_LENGTH + 1)

    # Exactly two specials, then one guaranteed digit and letter
    password_chars = [secrets.choice(SPECIAL) for _ in range(SPECIAL_COUNT)]
    password_chars.append(secrets.choice(DIGITS))
    password_chars.append(secrets.choice(LETTERS))

    # Fill the rest from letters + digits only
    while len(password_chars) < length:
        password_chars.append(secrets.choice(ALPHANUMERIC))

    # Shuffle so the guaranteed chars aren't always in front
    secrets.SystemRandom().shuffle(password_chars)

    return "".join(password_chars)
