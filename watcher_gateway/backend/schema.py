"""Executable schemas for watcher backends.

Every watcher shares :data:`BASE_SDL`; a watcher adds its own event types,
the ``Event`` union over them and its value queries through
``extend type Query``.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from graphql import (
    GraphQLError,
    GraphQLSchema,
    IntValueNode,
    StringValueNode,
    build_ast_schema,
    parse,
)

ResolverMap = Dict[str, Dict[str, Any]]

BASE_SDL = '''
scalar BigInt

type Proof {
  data: String!
}

type _Block_ {
  cid: String
  hash: String!
  number: Int!
  timestamp: Int!
  parentHash: String!
}

type _Transaction_ {
  hash: String!
  index: Int!
  from: String!
  to: String!
}

type ResultEvent {
  block: _Block_!
  tx: _Transaction_!
  contract: String!
  eventIndex: Int!
  event: Event!
  proof: Proof
}

type ResultState {
  block: _Block_!
  contractAddress: String!
  cid: String!
  kind: String!
  data: String!
}

type SyncStatus {
  latestIndexedBlockHash: String!
  latestIndexedBlockNumber: Int!
  latestCanonicalBlockHash: String!
  latestCanonicalBlockNumber: Int!
  initialIndexedBlockHash: String!
  initialIndexedBlockNumber: Int!
  latestProcessedBlockHash: String!
  latestProcessedBlockNumber: Int!
}

type Query {
  events(blockHash: String!, contractAddress: String!, name: String): [ResultEvent!]
  eventsInRange(fromBlockNumber: Int!, toBlockNumber: Int!, name: String): [ResultEvent!]
  getStateByCID(cid: String!): ResultState
  getState(blockHash: String!, contractAddress: String!, kind: String): ResultState
  getSyncStatus: SyncStatus
}

type Mutation {
  watchContract(address: String!, kind: String!, checkpoint: Boolean!, startingBlock: Int): Boolean!
}

type Subscription {
  onEvent: ResultEvent!
}
'''


def _serialize_big_int(value: Any) -> str:
    return str(int(value))


def _parse_big_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise GraphQLError(f"BigInt cannot represent value: {value!r}") from e


def _parse_big_int_literal(node, _variables=None) -> int:
    if isinstance(node, (IntValueNode, StringValueNode)):
        return _parse_big_int(node.value)
    raise GraphQLError("BigInt cannot represent a non-integer value", node)


def bind_resolvers(schema: GraphQLSchema, resolvers: Mapping[str, Mapping[str, Any]]) -> GraphQLSchema:
    """Attach a ``{type: {field: resolver}}`` map to a schema.

    Subscription fields take ``{"subscribe": ..., "resolve": ...}``.
    """
    for type_name, fields in resolvers.items():
        type_ = schema.get_type(type_name)
        if type_ is None or not hasattr(type_, "fields"):
            raise ValueError(f"Resolver type {type_name} is not an object type of the schema")
        for field_name, resolver in fields.items():
            field = type_.fields.get(field_name)
            if field is None:
                raise ValueError(f"Resolver {type_name}.{field_name} has no field in the schema")
            if isinstance(resolver, Mapping):
                field.subscribe = resolver.get("subscribe")
                field.resolve = resolver.get("resolve")
            else:
                field.resolve = resolver
    return schema


def build_backend_schema(
    sdl: str,
    resolvers: Mapping[str, Mapping[str, Any]],
    base_sdl: str = BASE_SDL,
) -> GraphQLSchema:
    """Build a watcher schema from ``BASE_SDL`` plus the watcher's own SDL."""
    schema = build_ast_schema(parse(base_sdl + "\n" + sdl))

    big_int = schema.get_type("BigInt")
    big_int.serialize = _serialize_big_int  # type: ignore[union-attr]
    big_int.parse_value = _parse_big_int  # type: ignore[union-attr]
    big_int.parse_literal = _parse_big_int_literal  # type: ignore[union-attr]

    return bind_resolvers(schema, resolvers)
