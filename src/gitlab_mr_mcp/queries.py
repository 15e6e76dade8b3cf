"""GraphQL queries for merge requests."""

from __future__ import annotations

_USER_FIELDS = """
    id
    username
    name
    avatarUrl
    webUrl
"""

MERGE_REQUEST_QUERY = f"""
query GetMergeRequest(
  $fullPath: ID!
  $iid: String!
  $commitsFirst: Int
  $discussionsFirst: Int
  $commitsAfter: String
  $discussionsAfter: String
) {{
  project(fullPath: $fullPath) {{
    id
    fullPath
    name
    webUrl
    mergeRequest(iid: $iid) {{
      id
      iid
      title
      description
      state
      sourceBranch
      targetBranch
      webUrl
      createdAt
      updatedAt
      mergedAt
      author {{ {_USER_FIELDS} }}
      assignees {{ nodes {{ {_USER_FIELDS} }} }}
      reviewers {{ nodes {{ {_USER_FIELDS} }} }}
      labels {{ nodes {{ title }} }}
      commits(first: $commitsFirst, after: $commitsAfter) {{
        pageInfo {{ hasNextPage endCursor }}
        nodes {{
          id
          sha
          title
          message
          authorName
          authorEmail
          authoredDate
          committedDate
          webUrl
        }}
      }}
      pipelines {{
        nodes {{
          id
          status
          ref
          sha
          createdAt
          updatedAt
          duration
        }}
      }}
      approved
      discussions(first: $discussionsFirst, after: $discussionsAfter) {{
        pageInfo {{ hasNextPage endCursor }}
        nodes {{
          id
          resolved
          resolvable
          notes {{
            nodes {{
              id
              body
              author {{ {_USER_FIELDS} }}
              createdAt
              updatedAt
              resolvable
              resolved
              position {{ oldLine newLine oldPath newPath }}
            }}
          }}
        }}
      }}
    }}
  }}
}}
"""
