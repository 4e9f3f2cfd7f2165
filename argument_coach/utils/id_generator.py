"""
Record ids: a short type prefix followed by random alphanumerics,
e.g. "SES_7xK9mN2pQ4aB". The prefix makes ids self-describing in logs.
"""

import secrets
import string
from enum import Enum
from functools import partial

ID_ALPHABET = string.ascii_letters + string.digits
RANDOM_LENGTH = 12


class IdKind(str, Enum):
    SESSION = "SES_"
    MESSAGE = "MSG_"
    DRAFT = "DRF_"
    ARGUMENT = "ARG_"


def new_id(kind: IdKind, length: int = RANDOM_LENGTH) -> str:
    return kind.value + "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def is_id_of(kind: IdKind, value: str) -> bool:
    """True if `value` looks like an id minted by new_id for `kind`."""
    if not isinstance(value, str) or not value.startswith(kind.value):
        return False
    tail = value[len(kind.value):]
    return len(tail) > 0 and all(ch in ID_ALPHABET for ch in tail)


# default_factory callables for the table models
session_id = partial(new_id, IdKind.SESSION)
message_id = partial(new_id, IdKind.MESSAGE)
draft_id = partial(new_id, IdKind.DRAFT)
argument_id = partial(new_id, IdKind.ARGUMENT)
