"""busrelay: native-messaging host <-> AMQP headers-exchange relay."""

__version__ = "0.1.0"
