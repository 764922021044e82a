from pytest_socket import disable_socket

def pytest_runtest_setup():
    """
    Runs before every test.
    No test may reach a real MQTT broker or LaMetric device: any TCP
    connect raises SocketBlockedError. Unix sockets stay allowed
    because the asyncio event loop needs a socketpair.
    """
    disable_socket(allow_unix_socket=True)
