from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    weight_unit: str = Field("lb", pattern="^(kg|lb)$")
    rest_seconds_isolation: int = Field(60, gt=0)
    rest_seconds_compound: int = Field(120, gt=0)
    isolation_keywords: str = (
        "raise,fly,curl,pushdown,extension,face pull,shrug,calf,plank,crunch,rotation"
    )
    recent_sessions_limit: int = Field(30, gt=0)


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
