from pydantic import BaseModel, Field


class CountResult(BaseModel):
    """ Модель ответа на запрос количества """
    source: str = Field(..., min_length=1, description="Источник данных")
    count: int = Field(..., description="Количество элементов, -1 если воркер вернул ошибку")


class HealthResponse(BaseModel):
    """ Модель ответа проверки здоровья """
    status: str = Field(..., description="Статус сервиса")
    error_rate: float = Field(default=0.0, description="Доля неуспешных вызовов")
    timestamp: float = Field(..., description="Временная метка")
