import logging
import os
from dotenv import load_dotenv

# LOG_FILE_PATH / LOG_LEVEL may come from .env
load_dotenv()
LOG_FILE = os.getenv('LOG_FILE_PATH', 'poll_agent.log')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# --- Logging Configuration ---
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    handlers=[
        # Console Handler (live view while the agent runs)
        logging.StreamHandler(),
        # File Handler (keeps a record of every detected question)
        logging.FileHandler(LOG_FILE, mode='a', encoding='utf-8')
    ]
)

# Export a logger instance shared by every context of the agent
agent_logger = logging.getLogger("POLL_AGENT")
