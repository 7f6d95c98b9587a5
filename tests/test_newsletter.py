import pytest

from common.services.newsletter_service import NewsletterService


@pytest.fixture
def newsletter(session_factory):
    return NewsletterService(session_factory)


def test_subscribe_unsubscribe_and_reactivate(newsletter):
    first = newsletter.subscribe(" Fan@Example.com ")
    assert first["action"] == "subscribed"
    assert first["subscriber"]["email"] == "fan@example.com"

    with pytest.raises(ValueError):
        newsletter.subscribe("fan@example.com")

    assert newsletter.unsubscribe("fan@example.com")
    assert not newsletter.unsubscribe("fan@example.com")
    assert not newsletter.is_email_subscribed("fan@example.com")

    again = newsletter.subscribe("fan@example.com")
    assert again["action"] == "reactivated"
    assert newsletter.count_active() == 1


def test_invalid_email_rejected(newsletter):
    with pytest.raises(ValueError):
        newsletter.subscribe("not-an-email")


def test_link_to_registered_user(newsletter, make_user):
    newsletter.subscribe("khach@example.com")
    user_id = make_user("khach@example.com")
    newsletter.link_to_user("khach@example.com", user_id)
    assert newsletter.is_user_subscribed(user_id)
