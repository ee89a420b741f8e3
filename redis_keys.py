REDIS_USER_KEY = "user:meta:{user_id}" # user id - profile hash
REDIS_FRIENDS_KEY = "user:friends:{user_id}" # user id - set of friend user IDs
REDIS_GROUP_KEY = "group:meta:{group_id}" # group id - group hash
REDIS_MEMBERS_KEY = "group:members:{group_id}" # group id - set of member user IDs
REDIS_MESSAGE_KEY = "message:{message_id}" # message id - message hash
REDIS_ROOM_MESSAGES_KEY = "room:messages:{room_id}" # room id - sorted set of message IDs scored by write sequence
REDIS_MESSAGE_SEQ_KEY = "message:seq" # counter giving every stored message its write position

# **Example `message:{id}` hash fields**
# - `_id` = `{messageId}`
# - `kind` = `dm` | `group`
# - `roomId` = `dm-<a>-<b>` | `group-<groupId>`
# - `sender` = userId
# - `recipient` = userId (dm only)
# - `group` = groupId (group only)
# - `text` = trimmed text, may be empty when an image is attached
# - `image` = data URL or empty
# - `createdAt` / `updatedAt` = ISO timestamps
