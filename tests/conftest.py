import asyncio
import json
from types import SimpleNamespace

import pytest

from swiftscan.config import Settings
from swiftscan.models.product import Product
from swiftscan.services.catalog import Catalog
from swiftscan.services.insights import InsightsService
from swiftscan.services.payment import PaymentService

MILK = Product(id="milk", name="Organic Milk 1L", price=4.50, category="Dairy", barcode="400123456")
BREAD = Product(id="bread", name="Artisan Bread", price=3.80, category="Bakery", barcode="400456789")
WATER = Product(id="sparkling-water", name="Sparkling Water 500ml", price=1.50, category="Beverages", barcode="400111222")


class FakeModels:
    def __init__(self, text=None, error=None, delay=0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


def fake_genai_client(text=None, error=None, delay=0):
    models = FakeModels(text=text, error=error, delay=delay)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


INSIGHT_JSON = json.dumps({
    "recipeSuggestion": "Cheese toast with a glass of milk",
    "totalCalories": 2150,
    "savingTips": "Buy bread from the day-old shelf.",
})


@pytest.fixture
def catalog():
    return Catalog([MILK, BREAD, WATER])


@pytest.fixture
def settings(tmp_path):
    return Settings(payment_delay_seconds=0, log_dir=str(tmp_path / "logs"))


@pytest.fixture
def payment_service():
    return PaymentService(tax_rate=0.05, delay_seconds=0)


@pytest.fixture
def insights_client():
    return fake_genai_client(text=INSIGHT_JSON)


@pytest.fixture
def insights_service(insights_client):
    client, _ = insights_client
    return InsightsService(model="test-model", client=client)
