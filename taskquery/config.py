import os
from dotenv import load_dotenv

load_dotenv()

config = {
    'groq_api_key': os.getenv('GROQ_API_KEY'),
    'openai_api_key': os.getenv('OPENAI_API_KEY'),
    'groq_model': os.getenv('GROQ_MODEL', 'llama-3.3-70b-versatile'),
    'openai_model': os.getenv('OPENAI_MODEL', 'gpt-4o-mini'),
    'temperature': float(os.getenv('TASKQUERY_TEMPERATURE', 0.1)),
    'max_tokens': int(os.getenv('TASKQUERY_MAX_TOKENS', 1024)),
    'llm_timeout': float(os.getenv('TASKQUERY_LLM_TIMEOUT', 20)),
    'analysis_timeout': float(os.getenv('TASKQUERY_ANALYSIS_TIMEOUT', 45)),
    'task_store_path': os.getenv('TASKQUERY_STORE', './data/tasks.json'),
}
