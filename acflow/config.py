from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "ACFLOW_", "case_sensitive": False}

    # Solver defaults
    method: str = "newton_raphson"
    linear_solver: str = "lu"
    tolerance: float = 1e-8
    max_iterations: int = 20
    gauss_seidel_max_iterations: int = 1000
    jacobian_workers: int = 1

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()
