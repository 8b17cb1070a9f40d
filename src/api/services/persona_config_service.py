"""
Persona configuration service

Loads the scripted tutor and peer personas from YAML
"""
import logging
import yaml
import aiofiles
from pathlib import Path
from typing import List, Optional

from ..models.persona import Persona, PersonasConfig
from ..paths import (
    bootstrap_personas_file,
    default_personas_path,
    local_personas_path,
    personas_read_path,
)

logger = logging.getLogger(__name__)


class PersonaConfigService:
    """Persona configuration management service"""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize persona configuration service

        Args:
            config_path: Configuration file path, defaults to config/local/personas.yaml
                layered over config/defaults/personas.yaml
        """
        self.defaults_path: Optional[Path] = None

        if config_path is None:
            self.defaults_path = default_personas_path()
            self.config_path = local_personas_path()
        else:
            self.config_path = Path(config_path)
        self._ensure_config_exists()

    def _ensure_config_exists(self):
        """Ensure configuration file exists, create default if not"""
        initial_text = yaml.safe_dump(self._get_default_config(), allow_unicode=True, sort_keys=False)
        if bootstrap_personas_file(self.config_path, self.defaults_path, initial_text):
            logger.info(f"Created personas config at {self.config_path}")

    def _get_default_config(self) -> dict:
        """Minimal cast used when no personas file ships with the install"""
        return {
            "personas": [
                {
                    "id": "bob",
                    "display_name": "Bob",
                    "role": "tutor",
                    "system_prompt": "You are Bob, a precise and concise math tutor.",
                },
                {
                    "id": "arithmetic",
                    "display_name": "Alice",
                    "role": "peer",
                    "error_profile": "Sound concepts, occasional arithmetic slips.",
                    "system_prompt": "You are Alice, a friendly student.",
                },
                {
                    "id": "concept",
                    "display_name": "Charlie",
                    "role": "peer",
                    "error_profile": "Accurate arithmetic, occasional wrong concept.",
                    "system_prompt": "You are Charlie, an enthusiastic student.",
                },
            ]
        }

    async def load_config(self) -> PersonasConfig:
        """Load configuration file"""
        config_path = personas_read_path(self.config_path, self.defaults_path)

        async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
            content = await f.read()
            data = yaml.safe_load(content) or {}
            config = PersonasConfig(**data)

        ids = [persona.id for persona in config.personas]
        if len(ids) != len(set(ids)):
            raise ValueError(f"duplicate persona ids in {config_path}")
        names = [persona.display_name.lower() for persona in config.personas]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate persona display names in {config_path}")
        return config

    async def get_personas(self) -> List[Persona]:
        """Get all configured personas"""
        config = await self.load_config()
        return config.personas

    async def get_persona(self, persona_id: str) -> Optional[Persona]:
        """Get specific persona"""
        personas = await self.get_personas()
        return next((p for p in personas if p.id == persona_id), None)
