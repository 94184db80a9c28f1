"""
castgate/farcaster_proto.py

Protobuf message classes for the subset of Farcaster's `message.proto` that
a CastAdd submission needs:

    enum MessageType      { MESSAGE_TYPE_NONE = 0; MESSAGE_TYPE_CAST_ADD = 1; }
    enum HashScheme       { HASH_SCHEME_NONE = 0; HASH_SCHEME_BLAKE3 = 1; }
    enum SignatureScheme  { SIGNATURE_SCHEME_NONE = 0; SIGNATURE_SCHEME_ED25519 = 1; }
    enum FarcasterNetwork {
      FARCASTER_NETWORK_NONE = 0; FARCASTER_NETWORK_MAINNET = 1;
      FARCASTER_NETWORK_TESTNET = 2; FARCASTER_NETWORK_DEVNET = 3;
    }

    message CastId { uint64 fid = 1; bytes hash = 2; }

    message CastAddBody {
      repeated uint64 mentions = 2;
      oneof parent { CastId parent_cast_id = 3; string parent_url = 7; }
      string text = 4;
      repeated uint32 mentions_positions = 5;
    }

    message MessageData {
      MessageType type = 1;
      uint64 fid = 2;
      uint32 timestamp = 3;
      FarcasterNetwork network = 4;
      oneof body { CastAddBody cast_add_body = 5; }
    }

    message Message {
      MessageData data = 1;
      bytes hash = 2;
      HashScheme hash_scheme = 3;
      bytes signature = 4;
      SignatureScheme signature_scheme = 5;
      bytes signer = 6;
      bytes data_bytes = 7;
    }

The descriptors are declared with `descriptor_pb2` and loaded into a private
pool, so the classes behave exactly like protoc output (field numbers, proto3
packing, oneof presence) without a build step.
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "castgate.farcaster"

_F = descriptor_pb2.FieldDescriptorProto


def _enum(file: descriptor_pb2.FileDescriptorProto, name: str, values) -> None:
    enum = file.enum_type.add(name=name)
    for value_name, number in values:
        enum.value.add(name=value_name, number=number)


def _field(msg, name, number, ftype, type_name=None, repeated=False, oneof_index=None):
    field = msg.field.add(
        name=name,
        number=number,
        type=ftype,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
    )
    if type_name:
        field.type_name = f".{PACKAGE}.{type_name}"
    if oneof_index is not None:
        field.oneof_index = oneof_index
    return field


def _file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file = descriptor_pb2.FileDescriptorProto(
        name="castgate/farcaster/message.proto",
        package=PACKAGE,
        syntax="proto3",
    )

    _enum(file, "MessageType", [("MESSAGE_TYPE_NONE", 0), ("MESSAGE_TYPE_CAST_ADD", 1)])
    _enum(file, "HashScheme", [("HASH_SCHEME_NONE", 0), ("HASH_SCHEME_BLAKE3", 1)])
    _enum(file, "SignatureScheme", [("SIGNATURE_SCHEME_NONE", 0), ("SIGNATURE_SCHEME_ED25519", 1)])
    _enum(
        file,
        "FarcasterNetwork",
        [
            ("FARCASTER_NETWORK_NONE", 0),
            ("FARCASTER_NETWORK_MAINNET", 1),
            ("FARCASTER_NETWORK_TESTNET", 2),
            ("FARCASTER_NETWORK_DEVNET", 3),
        ],
    )

    cast_id = file.message_type.add(name="CastId")
    _field(cast_id, "fid", 1, _F.TYPE_UINT64)
    _field(cast_id, "hash", 2, _F.TYPE_BYTES)

    body = file.message_type.add(name="CastAddBody")
    body.oneof_decl.add(name="parent")
    _field(body, "mentions", 2, _F.TYPE_UINT64, repeated=True)
    _field(body, "parent_cast_id", 3, _F.TYPE_MESSAGE, "CastId", oneof_index=0)
    _field(body, "text", 4, _F.TYPE_STRING)
    _field(body, "mentions_positions", 5, _F.TYPE_UINT32, repeated=True)
    _field(body, "parent_url", 7, _F.TYPE_STRING, oneof_index=0)

    data = file.message_type.add(name="MessageData")
    data.oneof_decl.add(name="body")
    _field(data, "type", 1, _F.TYPE_ENUM, "MessageType")
    _field(data, "fid", 2, _F.TYPE_UINT64)
    _field(data, "timestamp", 3, _F.TYPE_UINT32)
    _field(data, "network", 4, _F.TYPE_ENUM, "FarcasterNetwork")
    _field(data, "cast_add_body", 5, _F.TYPE_MESSAGE, "CastAddBody", oneof_index=0)

    message = file.message_type.add(name="Message")
    _field(message, "data", 1, _F.TYPE_MESSAGE, "MessageData")
    _field(message, "hash", 2, _F.TYPE_BYTES)
    _field(message, "hash_scheme", 3, _F.TYPE_ENUM, "HashScheme")
    _field(message, "signature", 4, _F.TYPE_BYTES)
    _field(message, "signature_scheme", 5, _F.TYPE_ENUM, "SignatureScheme")
    _field(message, "signer", 6, _F.TYPE_BYTES)
    _field(message, "data_bytes", 7, _F.TYPE_BYTES)

    return file


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_file_descriptor().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


CastId = _message_class("CastId")
CastAddBody = _message_class("CastAddBody")
MessageData = _message_class("MessageData")
Message = _message_class("Message")

MESSAGE_TYPE_CAST_ADD = 1
HASH_SCHEME_BLAKE3 = 1
SIGNATURE_SCHEME_ED25519 = 1
FARCASTER_NETWORKS = {"mainnet": 1, "testnet": 2, "devnet": 3}
