"""
Persona configuration data models

Defines Pydantic models for the scripted tutor and peer personas
that take turns with the learner
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional


class Persona(BaseModel):
    """Scripted conversational participant"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Persona unique identifier")
    display_name: str = Field(..., description="Name used in address tokens, e.g. @Alice")
    role: Literal["tutor", "peer"] = Field(..., description="Tutor leads, peers discuss")
    error_profile: str = Field("", description="Kind of mistakes this persona makes")
    system_prompt: str = Field("", description="Base system prompt for the persona")
    avatar: Optional[str] = Field(None, description="Avatar asset name")
    model_id: Optional[str] = Field(None, description="Model override (None = default model)")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Temperature override")


class PersonasConfig(BaseModel):
    """Complete personas configuration"""
    personas: List[Persona]
