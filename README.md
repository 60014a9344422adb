# gononymous

An anonymous imageboard. Every visitor gets a session cookie and a user
named after a randomly picked character, with that character's avatar.
Visitors can write posts and threaded comments, attach images, and rename
themselves. Posts are archived after a short while. Images go to a small
S3-style object store, which comes in the same package.

The package has two parts:

- `gononymous.storage`: a minimal bucket/object server. It keeps files on
  disk and bucket and object metadata in CSV files.
- `gononymous.board`: the imageboard WSGI application, with SQLite storage
  of users, posts and comments.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## The storage server

```
triple-s [--port <N>] [--dir <S>]
triple-s --help
```

- `--port N` (or `-port N`): the port to listen on. The default is `:9000`.
  The `PORT` environment variable takes precedence. A missing leading colon
  is added, and a host may come before the colon.
- `--dir S` (or `-dir S`): the data directory. The default is `./s3-data`.
  The `STORAGE_PATH` environment variable takes precedence. The directory is
  created if it is missing, and so is its bucket index `buckets.csv`.
- `--help`, `-help` or `-h` prints the usage text.

Routes:

| Method   | Path              | Action                                           |
|----------|-------------------|--------------------------------------------------|
| `PUT`    | `/{bucket}`       | create the bucket directory and reply with its XML |
| `GET`    | `/`               | list the buckets recorded in `buckets.csv` as XML |
| `DELETE` | `/{bucket}`       | delete an empty bucket (`409` if it is not empty) |
| `PUT`    | `/{bucket}/{key}` | store the request body as the object            |
| `GET`    | `/{bucket}/{key}` | return the object's content                     |
| `DELETE` | `/{bucket}/{key}` | delete an object recorded in the metadata       |
| `GET`    | `/health`         | reply `200`                                      |

Errors come back as XML documents with `Code`, `Message` and `Resource`
elements (`gononymous.storage.models.StorageError`).

Note the following about metadata:

- Creating a bucket or storing an object over HTTP writes the directory or
  file but does not add a record to `buckets.csv` or the bucket's
  `objects.csv`.
- Deleting an object over HTTP answers `404` unless the bucket and the object
  are recorded.
- Records are written with `gononymous.storage.metadata.MetadataStore`, for
  example with `save_bucket` and `save_object`.
- `GET` of a missing object answers `200` with an empty body.

The application is a plain WSGI callable:

```python
from gononymous.storage.server import create_app

app = create_app("./s3-data")
```

`gononymous.storage.metadata` also has `validate_bucket_name` and
`validate_object_name`. They implement S3-style naming rules. The server
itself does not enforce them.

## The imageboard

```
gononymous [--port <N>]
gononymous --help
```

`--port` defaults to `8080` and must be a number from 1 to 65535. The board
stores its data in the SQLite file named by the `DB_PATH` environment
variable, `gononymous.db` by default. It logs to `app.log` and to standard
output.

Pages:

- `/`: catalogue of active posts (any path that matches no other route shows
  it too)
- `/create-post` and `POST /submit-post`: write a post (multipart form with
  `name`, `subject`, `comment` and an optional `file`; the image may be up to
  10 MiB)
- `/post/{id}` and `POST /submit-comment`: read a thread and reply
  (multipart form with `postID`, `comment`, optional `parentCommentID` and
  `file`)
- `/archive` and `/archive-post/{id}`: every post, archived ones included
- `/profile` and `/profile/update-name`: the visitor's profile and a name
  change (JSON body `{"name": "..."}`, at most 50 bytes in UTF-8)

A background thread runs once a minute. It archives posts older than one
minute that have no comments, and posts older than two minutes that have
comments.

Uploaded images go to the storage server through
`gononymous.board.clients.ImageCollector`. By default it sends them to
`http://s3:9000` and hands out URLs under `http://localhost:9000/images/`.
Only JPEG, PNG, GIF, WebP and BMP images are accepted. New users get their
names and avatars from `gononymous.board.clients.CharacterClient`, which
queries a public character API by default.
`gononymous.board.services.AvatarPicker` picks character numbers without
repeats until all 826 have been used, then starts over.

### Using the pieces directly

The services do not depend on the web layer:

```python
from gononymous.board.clients import CharacterClient, ImageCollector
from gononymous.board.database import Repository, connect_db
from gononymous.board.web import build_services

conn = connect_db("board.sqlite3")
repository = Repository.from_connection(conn, CharacterClient())
services = build_services(repository, ImageCollector())
```

## What the package does not provide

- The board renders its pages from Jinja2 templates in `web/templates`,
  relative to the working directory. It needs `catalog.html`, `post.html`,
  `create-post.html`, `archive.html`, `archive-post.html`, `profile.html` and
  `error.html`. The package does not ship these templates, so you have to
  supply them.
- The board does not serve static files.
- The board needs the storage server to be running where `ImageCollector`
  expects it before image uploads can succeed.