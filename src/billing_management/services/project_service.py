from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..catalog import BUILDER_CATALOG, PlanCatalog
from ..db.base import BaseDBManager
from ..errors import InvalidInputError, NotFoundError
from ..models.project import Project
from ..timeutils import now_utc


logger = logging.getLogger(__name__)


class ProjectService:
    """
    CRUD for user-owned projects.

    A new project takes its document quota from the owner's plan at that
    moment (the free plan when no billing record exists yet).
    """

    def __init__(self, db: BaseDBManager, catalog: PlanCatalog = BUILDER_CATALOG) -> None:
        self._db = db
        self._catalog = catalog

    async def create_project(self, user_id: str, project: Project) -> Project:
        async with self._db.transaction():
            if await self._db.get_user(user_id) is None:
                raise NotFoundError("User not found", details={"user_id": user_id})
            billing = await self._db.get_billing(user_id)
            plan_id = billing.selected_plan if billing else self._catalog.free_plan
            plan = self._catalog.plans.get(plan_id) or self._catalog.plan(self._catalog.free_plan)

            project = project.model_copy(
                update={
                    "user_id": user_id,
                    "project_name": project.project_name.strip(),
                    "base_documents": plan.base_documents,
                    "used_documents": 0,
                }
            )
            project = await self._db.add_project(project)

        logger.info("Project %s created for user %s on plan %s", project.id, user_id, plan.id)
        return project

    async def list_projects(self, user_id: str) -> Iterable[Project]:
        return await self._db.get_projects(user_id)

    async def get_project(self, user_id: str, project_id: str) -> Project:
        project = await self._db.get_project(project_id, user_id)
        if project is None:
            raise NotFoundError(
                "Project not found or you do not have access to this project",
                details={"project_id": project_id},
            )
        return project

    async def update_project(
        self,
        user_id: str,
        project_id: str,
        project_name: str,
        project_description: Optional[str],
    ) -> Project:
        if not 2 <= len(project_name) <= 100:
            raise InvalidInputError("Project name must be between 2 and 100 characters")
        if project_description is not None and len(project_description) > 500:
            raise InvalidInputError("Project description must be less than 500 characters")

        async with self._db.transaction():
            project = await self.get_project(user_id, project_id)
            project = project.model_copy(
                update={
                    "project_name": project_name,
                    "project_description": project_description,
                    "updated_at": now_utc(),
                }
            )
            project = await self._db.update_project(project)

        logger.info("Project %s updated", project_id)
        return project

    async def delete_project(self, user_id: str, project_id: str) -> None:
        async with self._db.transaction():
            if not await self._db.delete_project(project_id, user_id):
                raise NotFoundError(
                    "Project not found or you do not have access to this project",
                    details={"project_id": project_id},
                )
        logger.info("Project %s deleted by user %s", project_id, user_id)
