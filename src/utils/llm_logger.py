"""Generation interaction logger for debugging and auditing."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


class LLMLogger:
    """Logger for persona generation calls with request/response tracking."""

    def __init__(self, log_dir: str = "logs"):
        """Initialize the interaction logger.

        Args:
            log_dir: Directory to store log files
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger("llm_interactions")
        self.logger.setLevel(logging.DEBUG)

        # Prevent duplicate handlers
        if not self.logger.handlers:
            log_file = self.log_dir / f"llm_interactions_{datetime.now().strftime('%Y%m%d')}.log"
            fh = logging.FileHandler(log_file, encoding='utf-8')
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(fh)

    def log_interaction(
        self,
        persona_id: str,
        messages_sent: List[Any],
        response_text: str,
        model: str,
        extra_params: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log one completed generation call.

        Args:
            persona_id: Persona the call spoke for
            messages_sent: LangChain messages sent to the model
            response_text: Text returned by the model
            model: Model name used
            extra_params: Additional request parameters (temperature, ...)
        """
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "persona_id": persona_id,
            "model": model,
            "request": {
                "message_count": len(messages_sent),
                "messages": [
                    {
                        "type": msg.__class__.__name__,
                        "content": msg.content,
                    }
                    for msg in messages_sent
                ],
            },
            "response": {"content": response_text},
        }
        if extra_params:
            log_entry["extra_params"] = extra_params

        self.logger.debug(json.dumps(log_entry, ensure_ascii=False))
        self.logger.info(
            f"LLM Call | Persona: {persona_id} | "
            f"Sent: {len(messages_sent)} msgs | "
            f"Received: {len(response_text)} chars"
        )

    def log_error(self, persona_id: str, error: Exception, context: str = "") -> None:
        """Log a failed generation call."""
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "type": "ERROR",
            "persona_id": persona_id,
            "error": {
                "type": error.__class__.__name__,
                "message": str(error),
                "context": context
            }
        }
        self.logger.error(json.dumps(log_entry, ensure_ascii=False))


# Global logger instance
_llm_logger = None


def get_llm_logger() -> LLMLogger:
    """Get or create the global interaction logger instance."""
    global _llm_logger
    if _llm_logger is None:
        _llm_logger = LLMLogger()
    return _llm_logger
