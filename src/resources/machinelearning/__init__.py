"""Machine Learning Workspace resource."""

from resources.machinelearning.workspace import (
    MachineLearningWorkspaceResource,
    WorkspacesApi,
)

__all__ = ["MachineLearningWorkspaceResource", "WorkspacesApi"]
