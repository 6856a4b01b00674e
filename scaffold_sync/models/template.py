"""Template metadata carried into pull request composition."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class TemplateInfo(BaseModel):
    """Template and target identity for one template upgrade pull request."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    branch: Optional[str] = None
    display_name: str
    previous_version: Optional[str] = None
    current_version: Optional[str] = None
    component_name: str
