import importlib.util
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlmodel import Session, select

from studytogether import models, services
from studytogether.database import engine


def _name():
    return f"user_{uuid.uuid4().hex[:10]}"


def test_register_login_and_me(client):
    username = _name()
    email = f"{username}@example.com"
    r = client.post('/auth/register', json={'username': username, 'password': 'pass123', 'email': email, 'display_name': 'Ada'})
    assert r.status_code == 201
    assert r.json()['user']['display_name'] == 'Ada'

    r2 = client.post('/auth/login', json={'username': username, 'password': 'pass123'})
    assert r2.status_code == 200
    assert set(r2.json()) == {'access_token'}
    token = r2.json()['access_token']

    # email works as the login identifier too
    r3 = client.post('/auth/login', json={'username': email, 'password': 'pass123'})
    assert r3.status_code == 200

    me = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    body = me.json()
    assert body['username'] == username
    assert body['partner_id'] is None
    assert body['last_login'] is not None


def test_register_rejects_duplicates_and_weak_passwords(client):
    username = _name()
    assert client.post('/auth/register', json={'username': username, 'password': 'pass123'}).status_code == 201
    dup = client.post('/auth/register', json={'username': username, 'password': 'pass123'})
    assert dup.status_code == 400
    weak = client.post('/auth/register', json={'username': _name(), 'password': '123'})
    assert weak.status_code == 400
    bad_email = client.post('/auth/register', json={'username': _name(), 'password': 'pass123', 'email': 'nope'})
    assert bad_email.status_code == 400


def test_protected_endpoints_need_token(client):
    assert client.get('/auth/me').status_code in (401, 403)
    assert client.get('/courses', headers={'Authorization': 'Bearer not-a-jwt'}).status_code == 401


def test_wrong_password_is_401(client, make_user):
    username, _ = make_user()
    r = client.post('/auth/login', json={'username': username, 'password': 'wrong'})
    assert r.status_code == 401


def test_lockout_after_repeated_failures(client, make_user):
    username, _ = make_user()
    headers = {'X-Forwarded-For': f'10.0.{uuid.uuid4().int % 250}.{uuid.uuid4().int % 250}'}
    for _ in range(4):
        r = client.post('/auth/login', json={'username': username, 'password': 'wrong'}, headers=headers)
        assert r.status_code == 401
    r = client.post('/auth/login', json={'username': username, 'password': 'wrong'}, headers=headers)
    assert r.status_code == 423
    # correct password is refused while locked, from any address
    r = client.post('/auth/login', json={'username': username, 'password': 'pass123'})
    assert r.status_code == 423


def test_expired_lockout_is_cleared():
    with Session(engine) as session:
        sec = services.SecurityService(session)
        ip = f'192.0.2.{uuid.uuid4().int % 250}'
        lock = models.UserLockout(ip=ip, attempts=5, unlock_at=datetime(2000, 1, 1, tzinfo=timezone.utc))
        session.add(lock)
        session.commit()
        assert sec.check_lockout(None, ip) is None
        remaining = session.exec(select(models.UserLockout).where(models.UserLockout.ip == ip)).all()
        assert remaining == []


def test_disabled_account_cannot_log_in(client, make_user):
    username, headers = make_user()
    with Session(engine) as session:
        user = session.exec(select(models.User).where(models.User.username == username)).one()
        user.status = 'disabled'
        session.add(user)
        session.commit()
    r = client.post('/auth/login', json={'username': username, 'password': 'pass123'})
    assert r.status_code == 403
    assert client.get('/auth/me', headers=headers).status_code == 403


def test_validate_password_endpoint(client):
    r = client.post('/auth/validate-password', json={'password': 'abc'})
    assert r.status_code == 200
    assert r.json()['valid'] is False
    assert client.post('/auth/validate-password', json={'password': 'abcdef'}).json() == {'valid': True, 'errors': []}


def test_stricter_policy_and_login_stats():
    with Session(engine) as session:
        sec = services.SecurityService(session)
        policy = sec.get_settings()
        original = (policy.password_require_uppercase, policy.password_require_numbers,
                    policy.password_require_special_chars)
        policy.password_require_uppercase = True
        policy.password_require_numbers = True
        policy.password_require_special_chars = True
        session.add(policy)
        session.commit()
        try:
            assert len(sec.validate_password('abcdefg')) == 3
            assert sec.validate_password('Abcdef1!') == []
        finally:
            (policy.password_require_uppercase, policy.password_require_numbers,
             policy.password_require_special_chars) = original
            session.add(policy)
            session.commit()

        sec.record_attempt('198.51.100.1', 'pytest', False, username='ghost', reason='invalid credentials')
        stats = sec.login_stats(days=1)
        assert stats['total_attempts'] >= 1
        assert stats['failed_attempts'] >= 1
        assert any(r['reason'] == 'invalid credentials' for r in stats['top_failure_reasons'])
        assert sec.cleanup_attempts(days_to_keep=365) == 0


def test_request_id_header_exists(client):
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.status_code == 200
    assert r.headers['X-Request-ID'] == 'abc123'


def test_security_report_script(capsys):
    path = Path(__file__).resolve().parents[1] / 'scripts' / 'security_report.py'
    spec = importlib.util.spec_from_file_location('security_report', path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    module.main(days=1)
    report = json.loads(capsys.readouterr().out)
    assert 'total_attempts' in report

    module.main(days=1, prune_older_than=365)
    out = capsys.readouterr().out
    assert out.startswith('Removed 0 login attempts older than 365 days')
