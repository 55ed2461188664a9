from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from services.lending.src.lending.main import app


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def curve():
    return {"starting_lb": "0.01", "slope": "2", "min_lb": "0.01", "max_lb": "0.05"}


class TestLiquidationBonus:

    def test_bonus_and_protocol_fee(self, client, curve):
        response = client.post(
            "/api/liquidation/bonus",
            json={"health_factor": "0.99", "curve": curve, "protocol_liquidation_fee": "0.5"},
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["bonus"]) == Decimal("0.03")
        assert Decimal(data["protocol_fee"]) == Decimal("0.015")

    def test_capped_by_collateralization_ratio(self, client, curve):
        response = client.post(
            "/api/liquidation/bonus",
            json={"health_factor": "0.5", "curve": curve, "collateralization_ratio": "1.02"},
        )
        assert Decimal(response.json()["bonus"]) == Decimal("0.02")

    def test_invalid_curve_returns_422(self, client, curve):
        curve["min_lb"] = "0.1"

        response = client.post(
            "/api/liquidation/bonus", json={"health_factor": "0.9", "curve": curve}
        )

        assert response.status_code == 422
