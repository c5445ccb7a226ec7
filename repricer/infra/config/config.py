VALID_CONDITIONS = [
    "New",
    "New with tags",
    "New with box",
    "New without tags",
    "Used",
    "Used, Excellent",
    "Used, Very Good",
    "Used, Good",
    "Used, Acceptable",
    "For parts or not working",
    "Refurbished",
    "Open box",
    "Certified Refurbished",
]

ANALYTICS_PERIOD_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
    "all": None,
}

DEFAULT_ANALYTICS_PERIOD = "30d"

HISTORY_SORT_FIELDS = {
    "created_at",
    "new_price",
    "old_price",
    "change_amount",
    "change_percentage",
    "status",
}

COLLECTIONS = {
    "strategies": "pricing_strategies",
    "rules": "competitor_rules",
    "listings": "listings",
    "manual_competitors": "manual_competitors",
    "price_history": "price_history",
    "users": "users",
}

# (collection key, keys, options)
INDEXES = [
    ("listings", [("item_id", 1), ("sku", 1), ("user_id", 1)], {"unique": True}),
    ("listings", [("monitoring_enabled", 1), ("strategy_id", 1)], {}),
    ("strategies", [("owner_id", 1), ("strategy_name", 1)], {"unique": True}),
    ("manual_competitors", [("user_id", 1), ("item_id", 1)], {"unique": True}),
    ("price_history", [("item_id", 1), ("sku", 1), ("created_at", -1)], {}),
    ("price_history", [("success", 1), ("created_at", 1)], {}),
    ("users", [("user_id", 1)], {"unique": True}),
]
