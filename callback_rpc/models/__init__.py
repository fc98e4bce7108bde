from callback_rpc.models.count_models import CountResult, HealthResponse

__all__ = ["CountResult", "HealthResponse"]
