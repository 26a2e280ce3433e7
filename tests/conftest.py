"""Shared test fixtures for the csvsense test suite.

* ``sales_csv``      -- five precisely-known order rows (bytes)
* ``sales_upload``   -- ``sales_csv`` wrapped as an UploadedFile
* ``sales_profile``  -- DataProfile built from ``sales_upload``
* ``monthly_csv``    -- two years of monthly rows for trend questions
* ``monthly_profile``-- DataProfile built from ``monthly_csv``

Revenue totals in ``sales_csv`` by category are Electronics 3680.50 and
Clothing 750.25; assertions in the executor tests depend on them.
"""

from __future__ import annotations

import pytest

from csvsense.agents.contracts import DataProfile
from csvsense.config import EngineConfig
from csvsense.profiling.profiler import UploadedFile, profile_csv


SALES_CSV = """order_id,date,region,category,revenue,quantity,email,returned
1001,2024-01-05,North,Electronics,1200.50,2,alice@example.com,no
1002,2024-01-18,South,Clothing,300.00,5,bob@example.com,no
1003,2024-02-03,North,Clothing,450.25,3,carol@example.com,yes
1004,2024-02-20,East,Electronics,980.00,1,dave@example.com,no
1005,2024-03-11,South,Electronics,1500.00,4,erin@example.com,no
"""


def _monthly_rows() -> str:
    lines = ["month,store,sales,visitors"]
    for i in range(24):
        year, month = 2022 + i // 12, i % 12 + 1
        for store, base in (("Downtown", 1000), ("Airport", 600)):
            sales = base + 50 * i
            lines.append(f"{year}-{month:02d}-01,{store},{sales},{sales // 10 + 7}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def sales_csv() -> bytes:
    return SALES_CSV.encode("utf-8")


@pytest.fixture
def sales_upload(sales_csv: bytes) -> UploadedFile:
    return UploadedFile(buffer=sales_csv, name="sales.csv")


@pytest.fixture
def sales_profile(sales_upload: UploadedFile) -> DataProfile:
    return profile_csv(sales_upload, EngineConfig()).profile


@pytest.fixture
def monthly_csv() -> bytes:
    return _monthly_rows().encode("utf-8")


@pytest.fixture
def monthly_profile(monthly_csv: bytes) -> DataProfile:
    return profile_csv(UploadedFile(buffer=monthly_csv, name="monthly.csv"), EngineConfig()).profile
