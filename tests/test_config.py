from scrutin.config import Settings
from scrutin.models.user import UserRole
from scrutin.schemas.user import UserResponse


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("FACE_MATCH_THRESHOLD", "0.45")
    monkeypatch.setenv("ENROLLMENT_POSES", '["frontal"]')

    config = Settings(_env_file=None)

    assert config.FACE_MATCH_THRESHOLD == 0.45
    assert config.ENROLLMENT_POSES == ["frontal"]
    assert config.REQUIRED_BLINKS == 3


def test_settings_names_are_case_sensitive(monkeypatch):
    monkeypatch.setenv("required_blinks", "7")

    assert Settings(_env_file=None).REQUIRED_BLINKS == 3


def test_settings_env_file(tmp_path, monkeypatch):
    monkeypatch.delenv("BLINK_TIMEOUT_MS", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("BLINK_TIMEOUT_MS=12000\n")

    assert Settings(_env_file=env_file).BLINK_TIMEOUT_MS == 12000


async def test_user_response_from_model(voter):
    response = UserResponse.model_validate(voter)

    assert response.id == voter.id
    assert response.email == "electeur@example.com"
    assert response.role == UserRole.VOTER
    assert response.is_active
