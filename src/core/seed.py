"""SeedData model for loading internships and question banks from YAML."""

import logging
import sqlite3
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from src.core.db import put_internship, put_test
from src.core.schemas import AssessmentTest, InternshipInfo, QuestionType

logger = logging.getLogger(__name__)


class SeedData(BaseModel):
    """Catalog fixtures: internships and the tests assigned to them."""

    internships: list[InternshipInfo] = Field(default_factory=list)
    tests: list[AssessmentTest] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_tests(self) -> "SeedData":
        known = {i.id for i in self.internships}
        for test in self.tests:
            if known and test.internship_id not in known:
                msg = f"test '{test.id}' references unknown internship '{test.internship_id}'"
                raise ValueError(msg)
            for q in test.questions:
                if q.type == QuestionType.MULTIPLE_CHOICE and not q.options:
                    msg = f"question '{q.id}' in test '{test.id}' has no options"
                    raise ValueError(msg)
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SeedData":
        """Load seed data from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Seed file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)


def load_seed(conn: sqlite3.Connection, seed: SeedData) -> tuple[int, int]:
    """Upsert internships and tests. Returns (internships, tests) written."""
    for internship in seed.internships:
        put_internship(conn, internship)
    for test in seed.tests:
        put_test(conn, test)
    logger.info("Seeded %d internships, %d tests", len(seed.internships), len(seed.tests))
    return (len(seed.internships), len(seed.tests))
