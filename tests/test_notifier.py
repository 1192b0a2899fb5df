import requests

from notifier import MAX_MESSAGE_LENGTH, LogNotifier, TelegramNotifier, build_notifier


class FakeResponse:
    def __init__(self, status_code=200, text='ok'):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.error:
            raise self.error
        return self.response


def test_message_is_posted_to_bot_api():
    session = FakeSession()
    notifier = TelegramNotifier('TOKEN', '42', session=session)

    assert notifier.notify('hello')
    url, payload, timeout = session.posts[0]
    assert url == 'https://api.telegram.org/botTOKEN/sendMessage'
    assert payload == {'chat_id': '42', 'text': 'hello'}
    assert timeout == 10.0


def test_long_message_is_split():
    session = FakeSession()
    notifier = TelegramNotifier('TOKEN', '42', session=session)

    assert notifier.notify('x' * (MAX_MESSAGE_LENGTH + 10))
    assert [len(p[1]['text']) for p in session.posts] == [MAX_MESSAGE_LENGTH, 10]


def test_failures_are_reported_not_raised():
    failing = TelegramNotifier('TOKEN', '42', session=FakeSession(error=requests.ConnectionError('down')))
    assert failing.notify('hello') is False

    rejected = TelegramNotifier('TOKEN', '42', session=FakeSession(FakeResponse(400, 'Bad Request')))
    assert rejected.notify('hello') is False


def test_build_notifier_falls_back_to_log():
    assert isinstance(build_notifier('', ''), LogNotifier)
    assert isinstance(build_notifier('TOKEN', '42'), TelegramNotifier)
