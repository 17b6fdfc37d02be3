from core.config import LocalSettings, ProductionSettings, Settings, get_settings


def test_budget_without_platform_ceiling():
    settings = Settings(GENERATION_TIME_BUDGET=90.0, PLATFORM_EXECUTION_CEILING=None)
    assert settings.effective_time_budget() == 90.0


def test_budget_respects_platform_ceiling():
    settings = Settings(GENERATION_TIME_BUDGET=120.0, PLATFORM_EXECUTION_CEILING=55.0, EXECUTION_SAFETY_MARGIN=5.0)
    assert settings.effective_time_budget() == 50.0


def test_budget_never_negative():
    settings = Settings(PLATFORM_EXECUTION_CEILING=3.0, EXECUTION_SAFETY_MARGIN=5.0)
    assert settings.effective_time_budget() == 0.0


def test_production_has_serverless_ceiling():
    assert ProductionSettings().PLATFORM_EXECUTION_CEILING == 55.0


def test_env_selects_settings(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    assert isinstance(get_settings(), ProductionSettings)

    monkeypatch.setenv("ENV", "local")
    assert isinstance(get_settings(), LocalSettings)


def test_credentials_come_from_environment(monkeypatch):
    monkeypatch.setenv("TRIPO_API_KEY", "tsk_from_env")
    monkeypatch.setenv("GENERATION_PROVIDER", "meshy")

    settings = Settings()

    assert settings.TRIPO_API_KEY == "tsk_from_env"
    assert settings.GENERATION_PROVIDER == "meshy"
