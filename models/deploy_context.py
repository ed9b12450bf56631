from pydantic import BaseModel, ConfigDict
from typing import Dict


class DeploymentContext(BaseModel):
    """Per-push values handed to the deployment script as environment variables."""

    model_config = ConfigDict(frozen=True)

    repository_full_name: str
    repository_name: str
    owner: str
    branch: str
    commit: str
    pusher: str
    delivery_id: str = "unknown"

    def to_env(self) -> Dict[str, str]:
        return {
            "REPO_FULL_NAME": self.repository_full_name,
            "REPO_NAME": self.repository_name,
            "REPO_OWNER": self.owner,
            "BRANCH": self.branch,
            "COMMIT_SHA": self.commit,
            "PUSHER": self.pusher,
            "DELIVERY_ID": self.delivery_id,
        }
