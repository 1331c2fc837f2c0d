# docspace

The service layer of a documentation platform. Documents are grouped into
spaces. The package manages space members and invitations, file uploads with
thumbnails, tags, document version history and full-text search. It also
provides the records of published snapshots and builds their document trees.

Every service works on a small in-memory record store, `docspace.core.Database`.
It keeps records in tables and looks them up by key. It supports filtered
queries with `find`, counts, and bulk changes with `update_where` and
`delete_where`. Errors are raised as subclasses of `docspace.core.ApiError`.
Each subclass has a `status_code`: `BadRequestError` (400), `ForbiddenError`
(403), `NotFoundError` (404), `ConflictError` (409), `ValidationError` (422),
`DatabaseError` and `InternalError` (500).

## Installation

```
pip install .
```

Install the test dependencies with `pip install ".[test]"`, then run the tests with `pytest`.

## Modules

| Module | Main names | Purpose |
| --- | --- | --- |
| `docspace.core` | `Database`, `RecordId`, `ApiError` and its subclasses | Record store, `table:key` identifiers, errors |
| `docspace.files` | `FileUploadService`, `validate_file_type`, `determine_file_type` | Save uploads to disk, check MIME types, make 300×300 JPEG thumbnails of images, list and soft-delete files |
| `docspace.versions` | `VersionService`, `generate_content_diff` | Create, restore, compare, summarise and delete document versions |
| `docspace.search` | `SearchService`, `generate_highlights`, `calculate_relevance_score` | Index documents, search with highlights and scores, suggest terms |
| `docspace.tags` | `TagService`, `Tag` | Tags per space, tag and untag documents, usage statistics |
| `docspace.identity` | `User`, `clean_user_id_format`, `extract_space_id` | User records and normalising of identifiers |
| `docspace.member_models` | `RolePolicy`, `SpaceMember`, `SpaceInvitation`, request classes | Roles, membership and invitation records |
| `docspace.space_members` | `SpaceMemberService` | Access checks, permissions, invitations and membership changes |
| `docspace.publication_models` | `SpacePublication`, `PublicationResponse`, request classes | Records and responses for published snapshots |
| `docspace.publication_tree` | `PublicationDocument`, `build_document_tree` | Snapshot documents arranged by parent links and `order_index` |

### Notes on behaviour

- `FileUploadService` reads `UPLOAD_DIR` (default `./uploads`) and
  `MAX_FILE_SIZE` (default 10485760 bytes) from the environment unless they
  are passed in. A user may delete only the files they uploaded. They may also
  delete a file in a space where the `permission_checker` callable grants them
  `docs.admin`.
- `SpaceMemberService` grants every permission to the owner of a space, which
  is the `owner_id` of its record in the `space` table. Accepted members get the
  permissions of their role from the given `RolePolicy` plus the custom
  permissions stored on their membership. The default `RolePolicy()` grants
  nothing to any role.
- Invitations are single-use and expire after 7 days unless
  `expires_in_days` says otherwise. An invitation to a user id also stores a
  record in the `notification` table.

## Example

```python
from docspace.core import Database
from docspace.versions import VersionService, CreateVersionRequest, VersionChangeType

db = Database()
versions = VersionService(db)

first = versions.create_version(
    "intro", "alice",
    CreateVersionRequest(title="Intro", content="Hello", change_type=VersionChangeType.CREATED),
)
second = versions.create_version(
    "intro", "alice",
    CreateVersionRequest(title="Intro", content="Hello\nWorld", change_type=VersionChangeType.UPDATED),
)

comparison = versions.compare_versions(first.id, second.id)
for diff in comparison.content_diff:
    print(diff.line_number, diff.change_type.value, diff.new_content)   # 2 added World
```

## What the package does not do

- It keeps all records in memory. Nothing is written to a database, and
  everything is lost when the process ends. Only uploaded files and thumbnails
  go to disk.
- It has no HTTP server or API routes, and no command-line program.
- It has no service that creates, updates or republishes publications. It
  provides the publication records, the URLs built from them and the
  document-tree builder, but the steps of publishing a space are not part of it.
- It sends no e-mail. An invitation sent to an e-mail address is only logged.