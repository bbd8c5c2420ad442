from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STOCHPATH_",
    )

    # Monte Carlo ensembles
    simulation_max_workers: int = 4
    simulation_default_seed: int = 42

    # Fractional Gaussian noise
    fgn_cholesky_max_steps: int = 512
    fgn_eigenvalue_tolerance: float = 1e-8

    # Estimators
    hurst_min_samples: int = 64

    # Levenberg-Marquardt calibration
    calibration_max_iterations: int = 200
    calibration_ftol: float = 1e-10
    calibration_xtol: float = 1e-10
    calibration_gtol: float = 1e-10
    calibration_initial_damping: float = 1e-3
    calibration_max_workers: int = 1

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    def calibration_options(self) -> dict[str, float | int]:
        """Keyword arguments for ``stochpath.calibration.calibrate``."""
        return {
            "max_iterations": self.calibration_max_iterations,
            "ftol": self.calibration_ftol,
            "xtol": self.calibration_xtol,
            "gtol": self.calibration_gtol,
            "initial_damping": self.calibration_initial_damping,
            "max_workers": self.calibration_max_workers,
        }
