import re

# "-" separates the parts of a room id, so it can never appear in a user id
USER_ID_RE = re.compile(r"^[A-Za-z0-9_]+$")


def is_valid_user_id(user_id) -> bool:
    return isinstance(user_id, str) and bool(USER_ID_RE.match(user_id))


def dm_room_id(user_a: str, user_b: str) -> str:
    """Order-independent room id for a direct conversation."""
    a, b = sorted([str(user_a), str(user_b)])
    return f"dm-{a}-{b}"


def group_room_id(group_id: str) -> str:
    return f"group-{group_id}"
