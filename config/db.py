from tortoise import Tortoise, connections

from config.settings import DATABASE_URL

TORTOISE_ORM = {
    "connections": {"default": DATABASE_URL},
    "apps": {
        "drops": {
            "models": ["apps.drops.models"],
            "default_connection": "default",
        },
    },
    "use_tz": True,
    "timezone": "UTC",
}


async def init_db(db_url: str | None = None, generate_schemas: bool = True) -> None:
    config = dict(TORTOISE_ORM)
    if db_url:
        config["connections"] = {"default": db_url}
    await Tortoise.init(config=config)
    if generate_schemas:
        await Tortoise.generate_schemas(safe=True)


async def close_db() -> None:
    await connections.close_all()
