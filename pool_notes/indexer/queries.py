"""
GraphQL documents sent to the pool indexer.

The activity query is deliberately generic: it is parameterised only by pool,
page size and cursor, so the indexer learns nothing about which records the
wallet is interested in. Never add a query filtered by precommitment or
nullifier here.
"""

GET_ACTIVITIES_PAGE = """
query GetActivitiesPage($poolId: String!, $limit: Int!, $after: String) {
  activitys(
    where: { poolId: $poolId }
    limit: $limit
    after: $after
    orderBy: "timestamp"
    orderDirection: "asc"
  ) {
    items {
      id
      type
      poolId
      amount
      label
      precommitmentHash
      spentNullifier
      newCommitment
      blockNumber
      timestamp
      transactionHash
    }
    pageInfo {
      hasNextPage
      hasPreviousPage
      startCursor
      endCursor
    }
  }
}
"""

HEALTH_CHECK = """
query HealthCheck {
  _meta {
    status
  }
}
"""
