"""Process exit codes shared by CLI commands."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
DATABASE_ERROR = 3
EXECUTION_FAILURE = 4
