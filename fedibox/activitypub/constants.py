"""ActivityStreams vocabulary and media types."""

AS_CONTEXT = 'https://www.w3.org/ns/activitystreams'
SECURITY_CONTEXT = 'https://w3id.org/security/v1'

ACTIVITY_MEDIA_TYPE = 'application/activity+json'
JSONLD_MEDIA_TYPE = 'application/ld+json'
# application/ld+json is accepted with any profile parameter
JSONLD_TYPES = (ACTIVITY_MEDIA_TYPE, JSONLD_MEDIA_TYPE)
ACCEPT_HEADER = f'{ACTIVITY_MEDIA_TYPE}, {JSONLD_MEDIA_TYPE}; profile="{AS_CONTEXT}"'

PUBLIC_ADDRESSES = frozenset([
    f'{AS_CONTEXT}#Public',
    'as:Public',
    'Public',
])

ADDRESSING_FIELDS = ('to', 'cc', 'bto', 'bcc', 'audience')
BLIND_FIELDS = ('bto', 'bcc')

ACTIVITY_TYPES = (
    'Accept', 'Add', 'Announce', 'Arrive', 'Block', 'Create', 'Delete',
    'Dislike', 'Flag', 'Follow', 'Ignore', 'Invite', 'Join', 'Leave',
    'Like', 'Listen', 'Move', 'Offer', 'Question', 'Read', 'Reject',
    'Remove', 'TentativeAccept', 'TentativeReject', 'Travel', 'Undo',
    'Update', 'View',
)

OBJECT_TYPES = (
    'Article', 'Audio', 'Document', 'Event', 'Image', 'Note', 'Page',
    'Place', 'Profile', 'Relationship', 'Tombstone', 'Video', 'Link',
    'Mention', 'Collection', 'OrderedCollection', 'CollectionPage',
    'OrderedCollectionPage', 'Application', 'Group', 'Organization',
    'Person', 'Service',
)
