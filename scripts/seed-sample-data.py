#!/usr/bin/env python3
"""
WorkTrack - Sample Data Seeder
Populates a database with a realistic project hierarchy by driving the
service layer, so every record comes with its timeline history.
Used for UAT, development, and demo environments.

Usage (after `pip install -e .`):
    DATABASE_URL=sqlite+aiosqlite:///./demo.db python scripts/seed-sample-data.py
    python scripts/seed-sample-data.py --projects 3 --sub-tasks 6 --seed 7
"""

import argparse
import asyncio
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from auth import CurrentUser
from database import close_db, get_session_factory, init_db
from models import IssueSeverity, IssueStatus, TaskKind, TaskStatus, User, UserRole
from service import WorkTrackService


# ── Configuration ───────────────────────────────────────────

FIRST_NAMES = ["Alice", "Bob", "Carol", "David", "Eve", "Frank", "Grace", "Henry", "Iris", "Jack"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis"]
PROJECT_NAMES = ["Riverside Renovation", "Harbour Offices", "Elm Street Extension", "Mill Lane Loft"]
MAIN_TASK_NAMES = ["Kitchen", "Bathroom", "Electrics", "Roofing", "Landscaping", "Flooring"]
SUB_TASK_NAMES = ["Strip out", "First fix", "Plastering", "Second fix", "Tiling", "Painting", "Snagging"]
ISSUE_TITLES = ["Damp patch", "Wrong fittings delivered", "Cracked tile", "Access blocked", "Leaking joint"]


class SampleDataSeeder:
    """Seeds users, projects, tasks and issues through WorkTrackService."""

    def __init__(self, service: WorkTrackService, seed: int = 42):
        random.seed(seed)
        self.service = service
        self.now = datetime.now(timezone.utc)
        self.counts = {"users": 0, "projects": 0, "main_tasks": 0, "sub_tasks": 0, "issues": 0}

    async def _add_user(self, index: int, role: UserRole) -> CurrentUser:
        first = random.choice(FIRST_NAMES)
        last = random.choice(LAST_NAMES)
        user = await self.service.directory.add_user(User(
            email=f"{first.lower()}.{last.lower()}{index}@worktrack.dev",
            display_name=f"{first} {last}",
            role=role,
        ))
        self.counts["users"] += 1
        return CurrentUser(id=user.id, display_name=user.display_name, role=role.value)

    async def _seed_sub_task(self, supervisor, main_task, members, name):
        assignees = random.sample(members, k=random.randint(1, min(2, len(members))))
        due = self.now + timedelta(days=random.randint(3, 60))
        sub = (await self.service.create_task(
            supervisor, main_task.project_id, name,
            parent_id=main_task.id,
            due_date=due,
            assignee_ids=[m.id for m in assignees],
        )).record
        self.counts["sub_tasks"] += 1

        worker = assignees[0]
        roll = random.random()
        if roll > 0.35:
            await self.service.change_task_status(worker, sub.id, TaskStatus.IN_PROGRESS)

        if random.random() > 0.7:
            issue = (await self.service.create_issue(
                supervisor, sub.id, random.choice(ISSUE_TITLES),
                severity=random.choice(list(IssueSeverity)),
                assignee_ids=[worker.id],
            )).record
            self.counts["issues"] += 1
            if random.random() > 0.5:
                await self.service.change_issue_status(worker, issue.id, IssueStatus.CLOSED)

        if roll > 0.7 and await self.service.store.count_open_issues(sub.id) == 0:
            await self.service.change_task_status(worker, sub.id, TaskStatus.COMPLETED)

    async def seed_all(self, projects: int, main_tasks: int, sub_tasks: int, members: int) -> dict:
        await self._add_user(0, UserRole.ADMIN)
        supervisors = [await self._add_user(i + 1, UserRole.SUPERVISOR) for i in range(max(1, projects // 2))]
        crew = [await self._add_user(i + 100, UserRole.MEMBER) for i in range(members)]

        for p in range(projects):
            supervisor = supervisors[p % len(supervisors)]
            name = PROJECT_NAMES[p] if p < len(PROJECT_NAMES) else f"Project {p}"
            project = await self.service.create_project(supervisor, name)
            self.counts["projects"] += 1

            for name in random.sample(MAIN_TASK_NAMES, k=min(main_tasks, len(MAIN_TASK_NAMES))):
                main = (await self.service.create_task(supervisor, project.id, name)).record
                self.counts["main_tasks"] += 1
                for sub_name in SUB_TASK_NAMES[:sub_tasks]:
                    await self._seed_sub_task(supervisor, main, crew, sub_name)

            deposit = (await self.service.create_task(
                supervisor, project.id, "Deposit",
                kind=TaskKind.COLLECTION,
                amount=Decimal(random.randint(500, 5000)),
                reminder_days=3,
                due_date=self.now + timedelta(days=random.randint(1, 14)),
            )).record
            self.counts["main_tasks"] += 1
            if random.random() > 0.5:
                await self.service.set_collection_status(supervisor, deposit.id, TaskStatus.COMPLETED)

        return self.counts


# ── CLI ─────────────────────────────────────────────────────

async def run(args) -> dict:
    await init_db()
    try:
        seeder = SampleDataSeeder(WorkTrackService(get_session_factory()), seed=args.seed)
        return await seeder.seed_all(args.projects, args.main_tasks, args.sub_tasks, args.members)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="WorkTrack Sample Data Seeder")
    parser.add_argument("--projects", type=int, default=2, help="Number of projects")
    parser.add_argument("--main-tasks", type=int, default=3, help="Main tasks per project")
    parser.add_argument("--sub-tasks", type=int, default=4, help="Sub-tasks per main task")
    parser.add_argument("--members", type=int, default=6, help="Crew members to assign")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()

    counts = asyncio.run(run(args))

    print("✅ Sample data seeded")
    for label, count in counts.items():
        print(f"   {label.replace('_', ' ').title()}: {count}")
    print(f"   Total Records: {sum(counts.values())}")


if __name__ == "__main__":
    main()
