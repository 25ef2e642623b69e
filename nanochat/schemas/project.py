# nanochat/schemas/project.py
from typing import Literal, Optional

from pydantic import StrictBool, StrictInt, StrictStr

from nanochat.schemas.common import Timestamp, WireModel

ProjectRole = Literal["owner", "editor", "viewer"]


class ProjectResponse(WireModel):
    id: StrictStr
    name: StrictStr
    description: Optional[StrictStr] = None
    system_prompt: Optional[StrictStr] = None
    color: Optional[StrictStr] = None
    # Membership role of the current user
    role: StrictStr = "owner"
    is_shared: StrictBool = False
    created_at: Timestamp
    updated_at: Timestamp

    @property
    def can_edit(self) -> bool:
        return self.role in ("owner", "editor")

    @property
    def can_manage(self) -> bool:
        return self.role == "owner"


class ProjectMemberUser(WireModel):
    id: Optional[StrictStr] = None
    name: Optional[StrictStr] = None
    email: Optional[StrictStr] = None
    image: Optional[StrictStr] = None


class ProjectMemberResponse(WireModel):
    id: StrictStr
    project_id: Optional[StrictStr] = None
    user_id: StrictStr
    role: StrictStr
    user: ProjectMemberUser
    created_at: Optional[Timestamp] = None

    @property
    def display_name(self) -> str:
        return self.user.name or self.user.email or self.user_id


class ProjectFileStorage(WireModel):
    url: Optional[StrictStr] = None
    size: Optional[StrictInt] = None
    content_type: Optional[StrictStr] = None


class ProjectFileResponse(WireModel):
    id: StrictStr
    project_id: StrictStr
    storage_id: StrictStr
    file_name: StrictStr
    file_type: StrictStr
    extracted_content: Optional[StrictStr] = None
    created_at: Timestamp
    storage: Optional[ProjectFileStorage] = None


class CreateProjectRequest(WireModel):
    name: str
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    color: Optional[str] = None


class UpdateProjectRequest(WireModel):
    name: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    color: Optional[str] = None


class AddProjectMemberRequest(WireModel):
    email: str
    role: ProjectRole = "viewer"
