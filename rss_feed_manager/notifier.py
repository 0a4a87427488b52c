"""
Protocol definition for notification backends.

Defines the common interface that all notifiers must implement.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Notifier(Protocol):
    """
    Protocol defining the interface for notification backends.

    All notifiers (Slack, Telegram) must implement these methods to be
    usable by the delivery dispatcher.

    The @runtime_checkable decorator allows using isinstance() checks
    against this protocol for structural typing validation.
    """

    def destination(self, channel: str) -> str:
        """
        Build the backend-specific destination for a configured channel.

        Parameters
        ----------
        channel : str
            Channel name from the subscription list.

        Returns
        -------
        str
            Destination accepted by ``post_message``.
        """
        ...

    async def post_message(self, destination: str, text: str) -> None:
        """
        Post a text message.

        Parameters
        ----------
        destination : str
            Destination returned by ``destination``.
        text : str
            Message text.

        Raises
        ------
        Exception
            Backend-specific error if the message could not be delivered.
        """
        ...

    async def test_connection(self) -> bool:
        """
        Test the connection to the notification backend.

        Returns
        -------
        bool
            True if the connection is working and messages can be sent.
        """
        ...

    async def close(self) -> None:
        """
        Close the notifier and release any resources.

        This method should be called when shutting down the application
        to cleanly close connections and free resources.
        """
        ...
