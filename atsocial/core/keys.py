from __future__ import annotations

# Durable key prefixes; existing tables depend on these exact strings.
USER_PREFIX = "USER#"
REPO_PREFIX = "REPO#"
REC_PREFIX = "REC#"
LINK_PREFIX = "LINK#"
POST_PREFIX = "POST#"
LIKE_PREFIX = "LIKE#"
FOLLOW_PREFIX = "FOLLOW#"
FOLLOWER_PREFIX = "FOLLOWER#"
REPLY_ROOT_PREFIX = "REPLY#ROOT#"

PROFILE_SK = "PROFILE"
PRIMARY_SK = "PRIMARY"
FEED_PK = "POST#ALL"

HANDLE_INDEX_PK = "HANDLE#"
DISPLAY_NAME_INDEX_PK = "DISPLAYNAME#"
EMAIL_INDEX_PK = "EMAIL#"

# Overloaded GSIs. Each projects ALL attributes.
GSI_OWNER = "GSI1"  # owner posts, likers, following
GSI_FEED = "GSI2"  # global feed, user likes, followers
GSI_USERNAME = "GSI3"
GSI_DISPLAY_NAME = "GSI4"
GSI_EMAIL = "GSI5"
GSI_REPLIES = "GSI13"


def index_keys(index: str) -> tuple:
    return f"{index}PK", f"{index}SK"


def user_pk(did: str) -> str:
    return f"{USER_PREFIX}{did}"


def repo_pk(did: str) -> str:
    return f"{REPO_PREFIX}{did}"


def record_sk(collection: str, rkey: str) -> str:
    return f"{REC_PREFIX}{collection}#{rkey}"


def link_sk(linked_id: str) -> str:
    return f"{LINK_PREFIX}{linked_id}"


def lookup_pk(linked_id: str) -> str:
    return f"{LINK_PREFIX}{linked_id}"


def post_pk(post_uri: str) -> str:
    return f"{POST_PREFIX}{post_uri}"


def like_sk(user_did: str) -> str:
    return f"{LIKE_PREFIX}{user_did}"


def follow_sk(following_did: str) -> str:
    return f"{FOLLOW_PREFIX}{following_did}"


def reply_root_pk(root_uri: str) -> str:
    return f"{REPLY_ROOT_PREFIX}{root_uri}"
