# This module handles Context engineering

# +---------------------+
# |      Memory         |   (Durable conversation log, retrieval index)
# |---------------------|
# | Conversation log    |
# | Indexed snippets    |
# +---------------------+

# +---------------------+
# |      State          |   (Per-actor versioned blob)
# |---------------------|
# | Canonical user      |
# | Cached history      |
# | Connection count    |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |           Context            |   (Built fresh per completion)
# |------------------------------|
# | System prompt                |
# | Retrieved snippets (<=30%)   |
# | Recent turns within budget   |
# +------------------------------+
#         |
#         v
#   [LLM completion]
