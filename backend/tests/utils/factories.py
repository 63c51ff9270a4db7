"""Test data factories using Faker for generating realistic test data."""
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import uuid4

from faker import Faker

from isp_lifecycle.schemas.account import Account, AccountStatus

fake = Faker()


class AccountFactory:
    """Factory for creating test subscriber accounts."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create account test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Account data
        """
        data = {
            "id": str(uuid4()),
            "account_number": f"ACC-{fake.unique.random_int(min=10000, max=99999)}",
            "customer_name": fake.name(),
            "customer_phone": f"+2547{fake.numerify('########')}",
            "status": AccountStatus.ACTIVE,
            "monthly_fee": Decimal(fake.random_element(["1500", "2500", "3500", "5000"])),
            "data_quota_gb": None,
            "next_billing_date": date(2024, 2, 1),
            "balance": Decimal("0"),
            "total_paid": Decimal(fake.random_int(min=0, max=50000)),
            "outstanding_balance": Decimal("0"),
            "timezone": None,
        }
        if overrides:
            data.update(overrides)
        return data

    @staticmethod
    def build(**overrides: Any) -> Account:
        """Create an Account model."""
        return Account(**AccountFactory.create(overrides))


class UsageReadingFactory:
    """Factory for creating test usage readings."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create usage reading test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Usage reading data
        """
        data = {
            "download_mbps": round(fake.pyfloat(min_value=0, max_value=100), 2),
            "upload_mbps": round(fake.pyfloat(min_value=0, max_value=20), 2),
            "total_download_mb": round(fake.pyfloat(min_value=0, max_value=5000), 2),
            "total_upload_mb": round(fake.pyfloat(min_value=0, max_value=500), 2),
        }
        if overrides:
            data.update(overrides)
        return data
