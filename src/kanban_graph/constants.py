STATE_DIR_NAME = ".kanban"
CONFIG_FILE = "config.yaml"

PROJECTS_FILE = "projects.yaml"
COLUMNS_FILE = "columns.yaml"
TASKS_FILE = "tasks.yaml"
RELATIONS_FILE = "relations.yaml"
LABELS_FILE = "labels.yaml"
TASK_LABELS_FILE = "task_labels.yaml"
COMMENTS_FILE = "comments.yaml"

STORE_VERSION = 1
WINDOWS_LOCK_BYTES = 4096

DEFAULT_DEADLINE_SECONDS = 30.0
DEFAULT_LOG_LEVEL = "INFO"

MAX_PROJECT_NAME = 100
MAX_COLUMN_NAME = 50
MAX_TASK_TITLE = 255
MAX_LABEL_NAME = 50
MAX_COMMENT_LENGTH = 1000

# Guard for tree building over relation chains
MAX_TREE_DEPTH = 100

DEFAULT_COLUMNS = (
    {"name": "Todo", "role": "ready"},
    {"name": "In Progress", "role": "in_progress"},
    {"name": "Done", "role": "completed"},
)

ENV_DATA_DIR = "KANBAN_DATA_DIR"
ENV_DEADLINE_SECONDS = "KANBAN_DEADLINE_SECONDS"
ENV_LOG_LEVEL = "KANBAN_LOG_LEVEL"

MOVE_NEXT = "next"
MOVE_PREV = "prev"
