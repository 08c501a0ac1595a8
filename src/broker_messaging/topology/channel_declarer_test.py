"""Tests for ChannelDeclarer."""

from unittest.mock import Mock, call

import pika
import pytest

from broker_messaging.contracts import IRabbitMQConnection
from broker_messaging.errors import ChannelError, DeclareError
from broker_messaging.queue_config import (
    ConsumeConfig,
    DeadLetterPolicy,
    PublishConfirmConfig,
    QueueConfig,
    QueueDescriptor,
)
from broker_messaging.roles import Role
from broker_messaging.topology import ChannelDeclarer


@pytest.fixture
def channel():
    channel = Mock()
    channel.is_closed = False
    return channel


@pytest.fixture
def mock_connection(channel):
    connection = Mock(spec=IRabbitMQConnection)
    connection.channel.return_value = channel
    return connection


def make_config(**overrides):
    descriptor = overrides.pop(
        "descriptor",
        QueueDescriptor(
            queue_name="orders",
            exchange_name="orders.exchange",
            exchange_type="topic",
            routing_key="orders.created",
        ),
    )
    return QueueConfig(descriptor=descriptor, **overrides)


def test_producer_declares_exchange_only(mock_connection, channel):
    declarer = ChannelDeclarer(mock_connection, make_config())

    result = declarer.open_channel(Role.PRODUCER)

    assert result is channel
    channel.exchange_declare.assert_called_once_with(
        exchange="orders.exchange",
        exchange_type="topic",
        durable=True,
        auto_delete=False,
    )
    channel.queue_declare.assert_not_called()
    channel.queue_bind.assert_not_called()
    channel.basic_qos.assert_not_called()
    channel.confirm_delivery.assert_not_called()


def test_producer_without_exchange_declares_nothing(mock_connection, channel):
    config = make_config(descriptor=QueueDescriptor(queue_name="plain"))

    ChannelDeclarer(mock_connection, config).open_channel(Role.PRODUCER)

    channel.exchange_declare.assert_not_called()
    channel.queue_declare.assert_not_called()


def test_consumer_declares_queue_binding_and_qos(mock_connection, channel):
    config = make_config(consume=ConsumeConfig(prefetch_count=10))

    ChannelDeclarer(mock_connection, config).open_channel(Role.CONSUMER)

    channel.queue_declare.assert_called_once_with(queue="orders", durable=True, arguments=None)
    channel.queue_bind.assert_called_once_with(
        queue="orders", exchange="orders.exchange", routing_key="orders.created"
    )
    channel.basic_qos.assert_called_once_with(prefetch_count=10, global_qos=False)


def test_consumer_prefetch_defaults_to_one(mock_connection, channel):
    config = make_config(consume=ConsumeConfig(prefetch_count=0))

    ChannelDeclarer(mock_connection, config).open_channel(Role.CONSUMER)

    channel.basic_qos.assert_called_once_with(prefetch_count=1, global_qos=False)


def test_consumer_without_exchange_skips_bind(mock_connection, channel):
    config = make_config(descriptor=QueueDescriptor(queue_name="jobs"))

    ChannelDeclarer(mock_connection, config).open_channel(Role.CONSUMER)

    channel.exchange_declare.assert_not_called()
    channel.queue_bind.assert_not_called()
    channel.queue_declare.assert_called_once_with(queue="jobs", durable=True, arguments=None)


def test_consumer_declares_dead_letter_pair_before_queue(mock_connection, channel):
    config = make_config(dead_letter=DeadLetterPolicy(enabled=True, message_ttl=60000))

    ChannelDeclarer(mock_connection, config).open_channel(Role.CONSUMER)

    assert channel.method_calls[:5] == [
        call.exchange_declare(
            exchange="orders.exchange", exchange_type="topic", durable=True, auto_delete=False
        ),
        call.exchange_declare(
            exchange="orders.exchange.dlx", exchange_type="direct", durable=True, auto_delete=False
        ),
        call.queue_declare(queue="orders.dlq", durable=True, arguments={"x-message-ttl": 60000}),
        call.queue_bind(
            queue="orders.dlq", exchange="orders.exchange.dlx", routing_key="orders.created"
        ),
        call.queue_declare(
            queue="orders",
            durable=True,
            arguments={
                "x-dead-letter-exchange": "orders.exchange.dlx",
                "x-dead-letter-routing-key": "orders.created",
            },
        ),
    ]


def test_dead_letter_overrides_are_used(mock_connection, channel):
    policy = DeadLetterPolicy(
        enabled=True, exchange="custom.dlx", queue_name="custom.dlq", routing_key="dead"
    )
    config = make_config(dead_letter=policy)

    ChannelDeclarer(mock_connection, config).open_channel(Role.CONSUMER)

    channel.queue_declare.assert_any_call(queue="custom.dlq", durable=True, arguments=None)
    channel.queue_bind.assert_any_call(queue="custom.dlq", exchange="custom.dlx", routing_key="dead")


def test_confirm_mode_enabled(mock_connection, channel):
    config = make_config(publish_confirm=PublishConfirmConfig(enabled=True, timeout=2))

    ChannelDeclarer(mock_connection, config).open_channel(Role.PRODUCER)

    channel.confirm_delivery.assert_called_once_with()


@pytest.mark.parametrize(
    "method, step",
    [
        ("exchange_declare", "exchange"),
        ("queue_declare", "queue"),
        ("queue_bind", "bind"),
        ("basic_qos", "qos"),
        ("confirm_delivery", "confirm-mode"),
    ],
)
def test_declare_failure_names_the_step(mock_connection, channel, method, step):
    getattr(channel, method).side_effect = pika.exceptions.ChannelClosedByBroker(406, "PRECONDITION")
    config = make_config(publish_confirm=PublishConfirmConfig(enabled=True))

    with pytest.raises(DeclareError) as excinfo:
        ChannelDeclarer(mock_connection, config).open_channel(Role.CONSUMER)

    assert excinfo.value.step == step
    assert excinfo.value.descriptor == config.key
    assert config.key in str(excinfo.value)
    channel.close.assert_called_once()


def test_channel_errors_propagate(mock_connection):
    mock_connection.channel.side_effect = ChannelError("no channel")

    with pytest.raises(ChannelError):
        ChannelDeclarer(mock_connection, make_config()).open_channel(Role.PRODUCER)
