import copy

import pytest

LEDGER = {
    "identities": {"siteId": 101, "primaryUserId": 7, "secondaryUserId": 8},
    "rates": [
        {
            "effectiveFrom": "2024-01",
            "localDiscount": 5,
            "gridTransfer": 20,
            "energyTax": 40,
            "norrlandDeduction": 5,
        }
    ],
    "months": [
        {
            "year": 2024,
            "month": 1,
            "isLocked": True,
            "inputs": {"spotPrice": 77.7, "usagePrimary": 1.0, "usageSecondary": 2.0},
            "appliedRates": {"localDiscount": 5, "gridTransfer": 20, "energyTax": 40, "norrlandDeduction": 5},
            "result": {
                "primary": {"adjustedSpotPrice": 72.7, "energyCost": 0.73, "gridCost": 0.65, "totalCost": 1.38},
                "secondary": {"adjustedSpotPrice": 72.7, "energyCost": 1.45, "gridCost": 1.3, "totalCost": 2.75},
            },
            "warnings": [],
            "note": "Avstämd manuellt",
        },
        {
            "year": 2024,
            "month": 2,
            "isLocked": False,
            "inputs": {"spotPrice": None, "usagePrimary": None, "usageSecondary": None},
            "appliedRates": {"localDiscount": 5, "gridTransfer": 20, "energyTax": 40, "norrlandDeduction": 5},
            "result": {
                "primary": {"adjustedSpotPrice": None, "energyCost": 0, "gridCost": 0, "totalCost": 0},
                "secondary": {"adjustedSpotPrice": None, "energyCost": 0, "gridCost": 0, "totalCost": 0},
            },
            "warnings": ["MissingSpotPrice", "MissingUsagePrimary", "MissingUsageSecondary"],
        },
    ],
    "meta": {"updatedAt": "2024-03-01T06:00:00.000Z", "lastRunStatus": "OK", "lastError": None},
    "profiles": {"me": {"label": "Jag"}, "neighbor": {"label": "Grannen"}},
}


@pytest.fixture()
def ledger_dict():
    return copy.deepcopy(LEDGER)
