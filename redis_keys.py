REDIS_META_KEY = "room:meta:{slug}" # room code - room metadata hash
REDIS_MESSAGES_KEY = "room:messages:{slug}" # room code - list of JSON messages, oldest first
REDIS_ACTIVITY_KEY = "rooms:activity" # sorted set: room code -> last activity epoch seconds
REDIS_MESSAGE_SEQ_KEY = "room:message_seq" # counter for message ids

# **Example `room:meta:{id}` hash fields**
# - `id` = `{roomId}`
# - `created_at` = ISO timestamp (UTC)
# - `last_activity` = ISO timestamp (UTC), mirrored as the score in `rooms:activity`

# **Example `room:messages:{id}` entry**
# - `{"id": 17, "username": "Guest_Swift_Wolf", "message": "hello", "timestamp": "..."}`
