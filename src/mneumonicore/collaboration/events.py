"""Socket.IO event names used by the relay."""

# client -> server
JOIN_ROOM = "join-collab-room"
LEAVE_ROOM = "leave-collab-room"

# server -> client
CURRENT_USERS = "current-users"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
COLLAB_ERROR = "collab-error"

# both directions
CURSOR_MOVE = "cursor-move"
COLLAB_UPDATE = "collab-update"
