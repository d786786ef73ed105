"""
DCOM permission model.

    rights       elementary rights, categories, scopes
    principal    SIDs and display-name resolution
    descriptor   self-relative security descriptor codec
    sddl         SDDL text form of descriptors
    entry        AccessControlEntry, the flag-level view of an ACE
    translate    masks to flags and back
    mutation     AclMutationEngine: verified read-modify-write
    sync         ACL comparison and copy
"""
