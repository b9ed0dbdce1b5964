# Synthetic address and id generation.
# Addresses are never validated against a real network.
import random
import re
import string
import time
import uuid

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
DESTINATION_ALPHABET = string.ascii_lowercase + string.digits

LEGACY_ADDRESS_LENGTH = 33
DESTINATION_ADDRESS_LENGTH = 39

LEGACY_ADDRESS_PATTERN = re.compile(r"^1[%s]{%d}$" % (BASE58_ALPHABET, LEGACY_ADDRESS_LENGTH))
DESTINATION_ADDRESS_PATTERN = re.compile(r"^bc1[a-z0-9]{%d}$" % DESTINATION_ADDRESS_LENGTH)

_rng = random.SystemRandom()


def generate_wallet_address() -> str:
    """Escrow and shell wallet address: '1' + 33 base58 characters."""
    return "1" + "".join(_rng.choice(BASE58_ALPHABET) for _ in range(LEGACY_ADDRESS_LENGTH))


def generate_destination_address() -> str:
    """Final mixing destination: 'bc1' + 39 lowercase alphanumerics."""
    return "bc1" + "".join(_rng.choice(DESTINATION_ALPHABET) for _ in range(DESTINATION_ADDRESS_LENGTH))


def generate_distinct_addresses(count: int) -> list:
    addresses = []
    while len(addresses) < count:
        address = generate_wallet_address()
        if address not in addresses:
            addresses.append(address)
    return addresses


def is_wallet_address(address: str) -> bool:
    return bool(address) and LEGACY_ADDRESS_PATTERN.match(address) is not None


def is_destination_address(address: str) -> bool:
    return bool(address) and DESTINATION_ADDRESS_PATTERN.match(address) is not None


def random_between(minimum: int, maximum: int) -> int:
    """Uniform integer in [minimum, maximum], both inclusive."""
    return _rng.randint(minimum, maximum)


def now_ms() -> int:
    return int(time.time() * 1000)


def _suffix(length: int = 10) -> str:
    return uuid.uuid4().hex[:length]


def generate_escrow_id() -> str:
    return f"escrow-{now_ms()}-{_suffix()}"


def generate_message_id() -> str:
    return f"msg-{now_ms()}-{_suffix()}"


def generate_settings_id() -> str:
    return f"fees-{now_ms()}-{_suffix()}"


def generate_fee_transaction_id() -> str:
    return f"tx_{now_ms():x}{_suffix(12)}"


def generate_wallet_id() -> str:
    return f"shell_{now_ms():x}{_suffix(12)}"
