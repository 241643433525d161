"""
Default values for the oxyflow runtime.

Kept in one place so components, configuration and tests agree on them.
"""

# Execution
DEFAULT_SEMAPHORE_COUNT = 16  # Concurrent executions allowed per component
DEFAULT_RETRIES = 3  # Attempts per execution, including the first one
DEFAULT_RETRY_DELAY = 1.0  # Seconds between attempts (fixed, no backoff)
DEFAULT_TOOL_TIMEOUT = 60  # Advisory, seconds
DEFAULT_LLM_TIMEOUT = 300  # Advisory, seconds
DEFAULT_EVENT_WAIT_TIMEOUT = 5.0  # Seconds an update waits for its create event

# Memory and reasoning
DEFAULT_MEMORY_SIZE = 10
DEFAULT_SHORT_MEMORY_SIZE = 10
DEFAULT_MAX_REACT_ROUNDS = 16
DEFAULT_MEMORY_MAX_TOKENS = 24800
DEFAULT_WEIGHT_SHORT_MEMORY = 5
DEFAULT_WEIGHT_REACT_MEMORY = 1

# Naming
DEFAULT_APP_NAME = "app"
DEFAULT_LLM_MODEL = "default_llm"
DEFAULT_MESSAGE_PREFIX = "oxygent"
USER_CALLER = "user"

DEFAULT_INPUT_SCHEMA = {
    "properties": {"query": {"description": "Query question"}},
    "required": ["query"],
}

FRIENDLY_LLM_ERROR = "Sorry, I encountered some issues. Please try again later."
EMPTY_ANSWER_REFLEXION = (
    "The response should not be empty. Please provide a more detailed and helpful answer."
)
